"""
Test factories for generating realistic test data.

Uses factory_boy for declarative test data generation.
"""

from .customer import CustomerFactory, SubscribedCustomerFactory, ChampionCustomerFactory
from .order import OrderFactory
from .journey import (
    JourneyFactory,
    trigger_node,
    delay_node,
    action_node,
    condition_node,
    goal_node,
    exit_node,
    edge,
    definition,
)

__all__ = [
    "CustomerFactory",
    "SubscribedCustomerFactory",
    "ChampionCustomerFactory",
    "OrderFactory",
    # Journeys
    "JourneyFactory",
    "trigger_node",
    "delay_node",
    "action_node",
    "condition_node",
    "goal_node",
    "exit_node",
    "edge",
    "definition",
]
