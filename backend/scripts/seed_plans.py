#!/usr/bin/env python3
"""
Seed subscription plans.

Creates the free, pro and enterprise plans, or updates them in place when
they already exist (matched by name). Safe to run repeatedly.

Usage:
    python backend/scripts/seed_plans.py --pro-product-id pdt_... --enterprise-product-id pdt_...
"""
import argparse
import logging
import os
import sys
from datetime import datetime
from decimal import Decimal

# Add backend to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.db.base import SessionLocal
from app.models import SubscriptionPlan

logger = logging.getLogger("seed_plans")


def plan_definitions(pro_product_id, enterprise_product_id):
    return [
        {
            "name": "free",
            "display_name": "Free",
            "description": "Perfect for getting started. 100 images and 1 model training for your first month.",
            "price": Decimal("0.00"),
            "image_generation_limit": 100,
            "model_training_limit": 1,
            "features": {"priority_support": False, "advanced_features": False, "api_access": False},
            "external_plan_id": None,
        },
        {
            "name": "pro",
            "display_name": "Pro",
            "description": "For power users. 300 images and 3 model trainings per month.",
            "price": Decimal("20.00"),
            "image_generation_limit": 300,
            "model_training_limit": 3,
            "features": {"priority_support": True, "advanced_features": True, "api_access": False},
            "external_plan_id": pro_product_id,
        },
        {
            "name": "enterprise",
            "display_name": "Enterprise",
            "description": "For teams and businesses. Unlimited images and 5 model trainings per month.",
            "price": Decimal("50.00"),
            "image_generation_limit": None,  # unlimited
            "model_training_limit": 5,
            "features": {
                "priority_support": True,
                "advanced_features": True,
                "api_access": True,
                "team_management": True,
            },
            "external_plan_id": enterprise_product_id,
        },
    ]


def seed_plans(db, definitions) -> None:
    for values in definitions:
        plan = db.query(SubscriptionPlan).filter(SubscriptionPlan.name == values["name"]).first()
        if plan is None:
            db.add(SubscriptionPlan(currency="USD", billing_cycle="monthly", **values))
            logger.info(f"Added plan: {values['display_name']}")
        else:
            for key, value in values.items():
                setattr(plan, key, value)
            plan.updated_at = datetime.utcnow()
            logger.info(f"Updated plan: {values['display_name']}")
    db.commit()


def main():
    parser = argparse.ArgumentParser(description="Seed subscription plans")
    parser.add_argument("--pro-product-id", default=os.environ.get("PRO_PRODUCT_ID"))
    parser.add_argument("--enterprise-product-id", default=os.environ.get("ENTERPRISE_PRODUCT_ID"))
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    db = SessionLocal()
    try:
        seed_plans(db, plan_definitions(args.pro_product_id, args.enterprise_product_id))
        logger.info("Subscription plans seeded successfully")
    finally:
        db.close()


if __name__ == "__main__":
    main()
