"""
Factory Boy factories shared across apps.

Usage:
    from core.tests.factories import UserFactory

    user = UserFactory()
    staff = UserFactory(is_staff=True)
"""

import factory
from django.contrib.auth import get_user_model


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for the configured user model.

    Examples:
        # Basic user
        user = UserFactory()

        # Staff user (may issue refunds)
        user = UserFactory(is_staff=True)
    """

    class Meta:
        model = get_user_model()
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"rider{n}")
    email = factory.Sequence(lambda n: f"rider{n}@example.com")
    is_active = True
    is_staff = False

    @classmethod
    def _create(cls, model_class, *args, **kwargs):
        """Override create to use UserManager.create_user()."""
        password = kwargs.pop("password", "TestPass123!")
        return model_class.objects.create_user(
            username=kwargs.pop("username"),
            email=kwargs.pop("email"),
            password=password,
            **kwargs,
        )
