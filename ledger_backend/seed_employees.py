"""
Database seeding script for the employee directory.

Creates one ADMIN, FINANCE, MANAGER and EMPLOYEE row for testing and
development, and prints a bearer token for each so the API can be
exercised without the identity service.
Run this script after the database is set up but before first use.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from ledger_backend.app.db.session import AsyncSessionLocal, engine, Base
from ledger_backend.app.models.employee import Employee
from ledger_backend.app.models.enums import EmployeeRole
from ledger_backend.app.core.jwt import create_access_token
from sqlalchemy import select

SEED_EMPLOYEES = [
    ("admin@ledger.local", "Ledger Admin", EmployeeRole.ADMIN),
    ("finance@ledger.local", "Finance Desk", EmployeeRole.FINANCE),
    ("manager@ledger.local", "Team Manager", EmployeeRole.MANAGER),
    ("employee@ledger.local", "Field Employee", EmployeeRole.EMPLOYEE),
]


async def seed_employees():
    """
    Seed the directory with one employee per role.

    Existing rows (matched by email) are left alone.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with AsyncSessionLocal() as db:
        print("🌱 Starting employee seeding...")

        seeded = []
        for email, full_name, role in SEED_EMPLOYEES:
            result = await db.execute(select(Employee).where(Employee.email == email))
            employee = result.scalar_one_or_none()
            if employee:
                print(f"ℹ️  {role.value} {email} already exists, skipping")
            else:
                employee = Employee(email=email, full_name=full_name, role=role, is_active=True)
                db.add(employee)
                await db.flush()
                print(f"✅ Created {role.value} employee {email}")
            seeded.append(employee)

        await db.commit()

        print("\n🎉 Employee seeding completed successfully!")
        print("\nBearer tokens (valid for the configured expiry):")
        for employee in seeded:
            token = create_access_token(data={
                "sub": employee.email,
                "user_id": employee.id,
                "role": employee.role.value,
            })
            print(f"  - {employee.role.value:<9} id={employee.id}: {token}")


if __name__ == "__main__":
    asyncio.run(seed_employees())
