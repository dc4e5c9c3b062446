#!/usr/bin/env python3
"""
Seed Data Script

Creates the GIKI transport network (routes, stops, weekly departure slots),
quota rules, system wallets, default settings and the first super admin.
Existing rows are left alone, so the script can be re-run safely.

Usage:
    SEED_ADMIN_PASSWORD=... python seed_data.py
"""

import os
from datetime import time

from src.auth.roles import Role
from src.auth.utils import get_password_hash
from src.config_management.service import ConfigService
from src.database import Base, SessionLocal, engine
from src.models import QuotaRule, Route, RouteStop, RouteWeeklySchedule, Stop, User
from src.transport.schemas import Direction
from src.wallet.service import WalletService

STOPS = [
    ("GIKI Campus", "Topi, Swabi"),
    ("Swabi Interchange", "M-1 Motorway, Swabi"),
    ("Peshawar Mor", "G-9/1, Islamabad"),
    ("Faizabad", "Faizabad Interchange, Rawalpindi"),
    ("Saddar", "Saddar, Rawalpindi"),
    ("Hayatabad", "Phase 3 Chowk, Peshawar"),
]

# route name -> (ordered stops, {day_of_week: [departure times]})
ROUTES = {
    "Campus - Islamabad/Rawalpindi": (
        ["GIKI Campus", "Swabi Interchange", "Peshawar Mor", "Faizabad", "Saddar"],
        {4: [time(14, 0), time(17, 0)], 6: [time(15, 0)]},
    ),
    "Campus - Peshawar": (
        ["GIKI Campus", "Swabi Interchange", "Hayatabad"],
        {4: [time(14, 30)], 6: [time(16, 0)]},
    ),
}

QUOTAS = {
    Role.STUDENT: 5,
    Role.EMPLOYEE: 10,
}


def create_stops(db):
    print("Creating stops...")
    stops = {}
    for name, address in STOPS:
        stop = db.query(Stop).filter(Stop.name == name).first()
        if stop is None:
            stop = Stop(name=name, address=address)
            db.add(stop)
        stops[name] = stop
    db.flush()
    return stops


def create_routes(db, stops):
    print("Creating routes and weekly schedules...")
    created = 0
    for name, (stop_names, schedule) in ROUTES.items():
        if db.query(Route).filter(Route.name == name).first():
            print(f"  - {name} already exists, skipping")
            continue

        route = Route(name=name)
        db.add(route)
        db.flush()

        for sequence, stop_name in enumerate(stop_names, start=1):
            db.add(RouteStop(route_id=route.id, stop_id=stops[stop_name].id, default_sequence=sequence))

        for day, departures in schedule.items():
            for departure in departures:
                db.add(RouteWeeklySchedule(route_id=route.id, day_of_week=day, departure_time=departure))
        created += 1
    db.flush()
    return created


def create_quota_rules(db):
    print("Creating quota rules...")
    created = 0
    for role, limit in QUOTAS.items():
        for direction in Direction:
            exists = db.query(QuotaRule).filter(
                QuotaRule.user_role == role.value,
                QuotaRule.direction == direction.value,
            ).first()
            if exists is None:
                db.add(QuotaRule(user_role=role.value, direction=direction.value, weekly_limit=limit))
                created += 1
    db.flush()
    return created


def create_super_admin(db):
    """Create the first super admin; its wallet is created on first use"""
    email = os.getenv("SEED_ADMIN_EMAIL", "transport.admin@giki.edu.pk").lower()
    password = os.getenv("SEED_ADMIN_PASSWORD")
    if db.query(User).filter(User.email == email).first():
        print(f"✅ Super admin {email} already exists, skipping...")
        return
    if not password:
        print("⚠️  SEED_ADMIN_PASSWORD is not set, skipping super admin")
        return

    db.add(User(
        name="Transport Office",
        email=email,
        password_hash=get_password_hash(password),
        user_type=Role.SUPER_ADMIN.value,
        is_active=True,
        is_verified=True,
    ))
    db.flush()
    print(f"🔧 Created super admin {email}")


def create_seed_data():
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()

    try:
        print("🚀 Creating seed data for GIKI Transport & Wallet...")

        stops = create_stops(db)
        routes = create_routes(db, stops)
        quotas = create_quota_rules(db)

        print("Creating system wallets and default settings...")
        WalletService(db).ensure_system_wallets()
        ConfigService(db).ensure_defaults()

        create_super_admin(db)

        db.commit()
        print("✅ Successfully created seed data!")
        print("Created:")
        print(f"  - {len(stops)} stops")
        print(f"  - {routes} routes")
        print(f"  - {quotas} quota rules")

    except Exception as e:
        print(f"❌ Error creating seed data: {e}")
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    create_seed_data()
