import inquirer
from rich.console import Console
from wp_maintenance import db_utils
from wp_maintenance.db_utils import check_db_connection_with_friendly_error, print_connection_report
from wp_maintenance.search_replace_menu import search_and_replace_menu
from wp_maintenance.prefix_menu import change_prefix_menu

console = Console()

def main():
    # Display welcome message and database connection status
    console.print("🛠️  WordPress Database Maintenance", style="bold blue")
    console.print("=" * 50, style="blue")

    # Check database connection status on startup
    console.print("\n📡 Checking database connection...", style="cyan")
    db_connected = check_db_connection_with_friendly_error()

    if not db_connected:
        console.print("\n⚠️  Some features may not work until database connection is established.", style="yellow")

    console.print("\n" + "=" * 50, style="blue")

    while True:
        questions = [
            inquirer.List(
                "option",
                message="Select an option",
                choices=["1. Test DB Connection", "2. Search & Replace", "3. Change Table Prefix", "Exit"],
            )
        ]
        answers = inquirer.prompt(questions)

        # Handle case where user cancels (Ctrl+C)
        if answers is None:
            console.print("\n👋 Exiting application. Goodbye!", style="bold green")
            break

        if answers["option"] == "1. Test DB Connection":
            db_utils.reset_db_engine()
            print_connection_report(db_utils.test_db_connection())
        elif answers["option"] == "2. Search & Replace":
            search_and_replace_menu()
        elif answers["option"] == "3. Change Table Prefix":
            change_prefix_menu()
        elif answers["option"] == "Exit":
            console.print("👋 Exiting application. Goodbye!", style="bold green")
            break

if __name__ == "__main__":
    main()
