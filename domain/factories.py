"""
SHOP - Aggregate Factories

Creation of aggregates from validated command data.

Usage:
    from domain.factories import CustomerFactory

    customer = CustomerFactory.create(
        "Ana", "Silva", Gender.FEMALE, "ana@x.com", date(1990, 1, 1)
    )
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Union

from domain.entities import Customer, Email, Gender

logger = logging.getLogger("shop.factories")


class CustomerFactory:
    """Builds new Customer aggregates, normalizing raw inputs."""

    @staticmethod
    def create(
        first_name: str,
        last_name: str,
        gender: Union[Gender, str],
        email: Union[Email, str],
        date_of_birth: date,
    ) -> Customer:
        """
        Create a new customer with a fresh identity.

        The returned aggregate carries a pending CustomerCreatedEvent.

        Raises:
            ValueError: If any value object or invariant rejects the input
        """
        customer = Customer.create(
            first_name=first_name,
            last_name=last_name,
            gender=Gender.parse(gender),
            email=email if isinstance(email, Email) else Email.parse(email),
            date_of_birth=date_of_birth,
        )
        logger.debug(f"Created customer {customer.id}")
        return customer
