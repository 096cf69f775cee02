"""
Customer test factory.
"""

import factory
from faker import Faker

fake = Faker()


class CustomerFactory(factory.Factory):
    """
    Factory for generating Customer test data.

    Usage:
        customer = Customer(**CustomerFactory())
        customer = Customer(**CustomerFactory(name="Carla Rojas"))
    """

    class Meta:
        model = dict

    name = factory.LazyFunction(fake.name)
    phone = factory.LazyFunction(lambda: fake.numerify("9########"))
    email = factory.LazyFunction(lambda: fake.email().lower())
    document_number = factory.Sequence(lambda n: f"{n:08d}")
