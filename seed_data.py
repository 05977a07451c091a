"""Seed initial data for development

Run this script to create:
- An owner account
- A demo establishment with two professionals
- Some sample services and customers
- A loyalty program with a first reward
- Default financial categories

Usage:
    python seed_data.py
"""
from app.core.database import SessionLocal, init_db
from app.core.customization import get_default_config
from app.core.security import get_password_hash
from app.models.models import (
    User, Establishment, Professional, Service, Customer,
    CustomerLoyalty, LoyaltyTransaction, Reward, FinancialCategory
)
from datetime import datetime, timedelta


def seed_data():
    init_db()
    db = SessionLocal()

    try:
        # Check if data already exists
        existing_user = db.query(User).filter(User.email == "owner@barbeariacentral.com").first()
        if existing_user:
            print("Data already exists. Skipping seed.")
            return

        owner = User(
            email="owner@barbeariacentral.com",
            hashed_password=get_password_hash("owner1234"),
            full_name="Carlos Almeida",
            phone="(11) 98765-4321",
            is_active=1
        )
        db.add(owner)
        db.flush()

        print(f"✓ Created owner: {owner.email}")
        print(f"  Password: owner1234")

        establishment = Establishment(
            user_id=owner.id,
            name="Barbearia Central",
            slug="barbearia-central",
            description="Cortes clássicos e modernos no centro da cidade",
            address="Rua Augusta, 1500",
            city="São Paulo",
            state="SP",
            zip_code="01304-001",
            phone="(11) 3333-4444",
            email="contato@barbeariacentral.com",
            opening_hour=9,
            closing_hour=20,
            max_concurrent_slots=2,
            config=get_default_config(),
            status="active"
        )
        db.add(establishment)
        db.flush()

        print(f"✓ Created establishment: {establishment.name} (ID: {establishment.id})")

        professionals = [
            Professional(
                user_id=owner.id,
                establishment_id=establishment.id,
                name="João Pereira",
                phone="(11) 91234-5678",
                specialties=["Corte", "Barba"]
            ),
            Professional(
                user_id=owner.id,
                establishment_id=establishment.id,
                name="Marcos Lima",
                phone="(11) 92345-6789",
                specialties=["Corte", "Coloração"]
            ),
        ]
        db.add_all(professionals)

        services = [
            Service(
                user_id=owner.id,
                establishment_id=establishment.id,
                name="Corte Masculino",
                description="Corte com máquina e tesoura",
                price=4500,  # R$45.00 in cents
                duration=30
            ),
            Service(
                user_id=owner.id,
                establishment_id=establishment.id,
                name="Barba",
                description="Barba com toalha quente",
                price=3500,
                duration=30
            ),
            Service(
                user_id=owner.id,
                establishment_id=establishment.id,
                name="Corte + Barba",
                description="Combo completo",
                price=7000,
                duration=60
            ),
        ]
        db.add_all(services)

        customers = [
            Customer(
                user_id=owner.id,
                establishment_id=establishment.id,
                name="Pedro Santos",
                email="pedro@example.com",
                phone="(11) 99876-5432",
                cpf="529.982.247-25"
            ),
            Customer(
                user_id=owner.id,
                establishment_id=establishment.id,
                name="Lucas Oliveira",
                email="lucas@example.com",
                phone="(11) 97654-3210",
                cpf="111.444.777-35"
            ),
        ]
        db.add_all(customers)
        db.flush()

        print(f"✓ Created {len(professionals)} professionals, {len(services)} services and {len(customers)} customers")

        now = datetime.utcnow()
        loyalty = CustomerLoyalty(
            user_id=owner.id,
            customer_id=customers[0].id,
            points=100,
            level="BRONZE",
            current_value=0,
            target_value=50000,
            start_date=now,
            end_date=now + timedelta(days=365),
            status="ACTIVE"
        )
        db.add(loyalty)
        db.flush()

        # Opening balance goes through the ledger
        db.add(LoyaltyTransaction(
            loyalty_id=loyalty.id,
            points=100,
            type="credit",
            source="bonus",
            description="Welcome bonus"
        ))
        db.add(Reward(
            loyalty_id=loyalty.id,
            title="Barba grátis",
            description="Uma barba por conta da casa",
            type="service",
            points=80,
            value=3500,
            expires_at=now + timedelta(days=90),
            max_redemptions=1
        ))

        print(f"✓ Created loyalty program for {customers[0].name} with 100 points")

        income = FinancialCategory(user_id=owner.id, name="Serviços", type="INCOME")
        expense = FinancialCategory(user_id=owner.id, name="Despesas Fixas", type="EXPENSE")
        db.add_all([income, expense])
        db.flush()
        db.add_all([
            FinancialCategory(user_id=owner.id, name="Produtos", type="INCOME", parent_id=income.id),
            FinancialCategory(user_id=owner.id, name="Aluguel", type="EXPENSE", parent_id=expense.id),
            FinancialCategory(user_id=owner.id, name="Energia", type="EXPENSE", parent_id=expense.id),
        ])

        print("✓ Created financial categories")

        db.commit()
        print("\n✅ Seed completed successfully!")

    except Exception as e:
        print(f"❌ Error seeding data: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    seed_data()
