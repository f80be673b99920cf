from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field

DEFAULT_PLAN_ID = "free"
DEFAULT_TOKEN_LIMIT = 1000


class Plan(BaseModel):
    id: str
    name: str
    price: int
    token_limit: int = Field(serialization_alias="tokenLimit")
    features: list[str]
    description: str
    popular: bool = False
    color: str

    @property
    def is_unlimited(self) -> bool:
        return self.token_limit == 0


PLANS: list[Plan] = [
    Plan(
        id="free",
        name="Free",
        price=0,
        token_limit=1000,
        features=[
            "1,000 tokens per month",
            "Basic AI chat support",
            "Standard response time",
            "Community support",
        ],
        description="Perfect for getting started with AI chatbots",
        color="#6b7280",
    ),
    Plan(
        id="starter",
        name="Starter",
        price=49,
        token_limit=5000,
        features=[
            "5,000 tokens per month",
            "Advanced AI capabilities",
            "Faster response times",
            "Email support",
            "Custom chatbot themes",
            "Basic analytics",
        ],
        description="Great for small businesses and startups",
        color="#3b82f6",
    ),
    Plan(
        id="professional",
        name="Professional",
        price=99,
        token_limit=50000,
        features=[
            "50,000 tokens per month",
            "Premium AI models",
            "Ultra-fast responses",
            "Priority support",
            "Advanced customization",
            "Detailed analytics",
            "Multiple chatbots",
            "API access",
        ],
        description="Ideal for growing businesses and teams",
        popular=True,
        color="#8b5cf6",
    ),
    Plan(
        id="enterprise",
        name="Enterprise",
        price=0,  # contact sales
        token_limit=0,  # unlimited
        features=[
            "Unlimited tokens",
            "Custom AI models",
            "Dedicated support",
            "Custom integrations",
            "Advanced security",
            "SLA guarantees",
            "On-premise options",
            "Custom training",
        ],
        description="For large organizations with custom needs",
        color="#10b981",
    ),
]


def get_plan_by_id(plan_id: str) -> Optional[Plan]:
    return next((plan for plan in PLANS if plan.id == plan_id), None)


def get_plan_by_name(name: str) -> Optional[Plan]:
    lowered = (name or "").strip().lower()
    return next((plan for plan in PLANS if plan.name.lower() == lowered), None)


def get_plan_token_limit(plan_id: str) -> int:
    plan = get_plan_by_id(plan_id)
    return plan.token_limit if plan else DEFAULT_TOKEN_LIMIT


def initialize_user_tokens(plan_id: str) -> dict[str, int]:
    token_limit = get_plan_token_limit(plan_id)
    return {"allocated": token_limit, "used": 0, "remaining": token_limit}


def serialize_plans() -> list[dict[str, Any]]:
    return [plan.model_dump(by_alias=True) for plan in PLANS]
