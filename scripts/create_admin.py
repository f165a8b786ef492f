import os
import sys
import argparse

# Ensure project root is on sys.path
BASE_DIR = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if BASE_DIR not in sys.path:
    sys.path.insert(0, BASE_DIR)

from sms_app import create_app
from sms_app.data_service import get_data_service
from sms_app.seed import seed_defaults
from sms_app.users.directory import UserDirectory


def create_admin(email: str, full_name: str, password: str, role: str) -> None:
    app = create_app()
    with app.app_context():
        service = get_data_service()
        seed_defaults(service)
        directory = UserDirectory(service)
        match = [r for r in directory.list_roles() if r["name"] == role]
        if not match:
            print(f"Role '{role}' not found.")
            return
        user = directory.create_user_with_role(full_name, email, password, match[0]["id"])
        print(f"Created '{user['email']}' with role '{role}'.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Create a user and give them a role.")
    parser.add_argument("--email", required=True, help="Login email of the new user")
    parser.add_argument("--name", required=True, help="Full name")
    parser.add_argument("--password", required=True, help="At least 8 characters")
    parser.add_argument("--role", default="Super Admin", help="Role to assign (e.g., Super Admin, Principal, Accountant)")
    args = parser.parse_args()

    create_admin(args.email, args.name, args.password, args.role)
