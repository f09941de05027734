from decimal import Decimal

from sqlalchemy import select

from app.db import SessionLocal, engine
from app.models import Base, Company, Contact, Product, User, UserRole
from app.security.sessions import create_user_session


DEMO_USERS = [
    ('admin', 'Admin User', UserRole.ADMIN),
    ('manager', 'Sales Manager', UserRole.SALES_MANAGER),
    ('executive', 'Sales Executive', UserRole.SALES_EXECUTIVE),
]


def seed() -> dict[str, str]:
    Base.metadata.create_all(engine)
    tokens: dict[str, str] = {}
    with SessionLocal() as db:
        for username, full_name, role in DEMO_USERS:
            user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
            if not user:
                user = User(username=username, full_name=full_name, email=f'{username}@example.com', role=role, active=True)
                db.add(user)
                db.flush()
            tokens[username] = create_user_session(db, user.id)

        admin_id = db.execute(select(User.id).where(User.username == 'admin')).scalar_one()
        company = db.execute(select(Company).where(Company.name == 'Acme Corp')).scalar_one_or_none()
        if not company:
            company = Company(name='Acme Corp', industry='Manufacturing', created_by=admin_id)
            db.add(company)
            db.flush()

        contact = db.execute(select(Contact).where(Contact.company_id == company.id)).scalars().first()
        if not contact:
            db.add(Contact(first_name='Jane', last_name='Buyer', email='jane@acme.example', company_id=company.id, created_by=admin_id))

        product = db.execute(select(Product).where(Product.sku == 'SVC-AUDIT')).scalar_one_or_none()
        if not product:
            db.add(Product(name='Security Audit Service', sku='SVC-AUDIT', price=Decimal('1500.00'), tax_rate=Decimal('10.00'), created_by=admin_id))

        db.commit()
    return tokens


if __name__ == '__main__':
    for username, token in seed().items():
        print(f'{username}: {token}')
    print('Seed data inserted/verified.')
