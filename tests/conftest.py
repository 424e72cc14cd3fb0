# tests/conftest.py
"""
Pytest configuration and shared fixtures for django-isa.
"""
import django
import pytest
from django.conf import settings


def pytest_configure():
    if not settings.configured:
        settings.configure(
            DEBUG=True,
            SECRET_KEY="test-secret-key-for-django-isa",
            DATABASES={
                "default": {
                    "ENGINE": "django.db.backends.sqlite3",
                    "NAME": ":memory:",
                }
            },
            INSTALLED_APPS=[
                "django.contrib.contenttypes",
                "django.contrib.auth",
                "django_escrow",
                "django_isa",
            ],
            DEFAULT_AUTO_FIELD="django.db.models.BigAutoField",
            USE_TZ=True,
            TIME_ZONE="UTC",
            ISA_MAX_DISTRIBUTION_STAKES=None,
        )
    django.setup()


@pytest.fixture
def make_user(db, django_user_model):
    """Factory for test users."""
    def _make(username):
        return django_user_model.objects.create_user(username=username, password="testpass")
    return _make


@pytest.fixture
def admin(make_user):
    return make_user("admin")


@pytest.fixture
def oracle(make_user):
    return make_user("oracle")


@pytest.fixture
def university(make_user):
    return make_user("university")


@pytest.fixture
def student(make_user):
    return make_user("student")


@pytest.fixture
def investor_a(make_user):
    return make_user("investor_a")


@pytest.fixture
def investor_b(make_user):
    return make_user("investor_b")


@pytest.fixture
def outsider(make_user):
    return make_user("outsider")


@pytest.fixture
def config(admin, oracle, university):
    """Initialized global configuration."""
    from django_isa.services import initialize_config
    return initialize_config(admin, oracle, university)


@pytest.fixture
def mint(db):
    from django_escrow.services import create_mint
    return create_mint("usdc", name="USD Coin", decimals=6)


@pytest.fixture
def other_mint(db):
    from django_escrow.services import create_mint
    return create_mint("eurc", name="Euro Coin", decimals=6)


@pytest.fixture
def make_account(mint):
    """Factory for accounts, optionally funded by issuance."""
    from django_escrow.services import issue, open_account

    def _make(owner, amount=0, in_mint=None):
        account = open_account(owner=owner, mint=in_mint or mint)
        if amount:
            issue(account, amount)
        return account
    return _make


@pytest.fixture
def agreement(student, mint):
    """course_cost=1000, percent=10, max_cap=300, in learning status."""
    from django_isa.services import initialize_isa
    return initialize_isa(student, mint, course_cost=1000, percent=10, max_cap=300)


@pytest.fixture
def investor_a_account(make_account, investor_a):
    return make_account(investor_a, 10_000)


@pytest.fixture
def investor_b_account(make_account, investor_b):
    return make_account(investor_b, 10_000)


@pytest.fixture
def student_account(make_account, student):
    return make_account(student, 10_000)


@pytest.fixture
def university_account(make_account, university):
    return make_account(university)


@pytest.fixture
def funded_agreement(agreement, investor_a, investor_b, investor_a_account, investor_b_account):
    """Agreement funded 600 by investor_a and 400 by investor_b."""
    from django_isa.services import invest
    invest(agreement, investor_a, investor_a_account, 600)
    stake = invest(agreement, investor_b, investor_b_account, 400)
    return stake.agreement


@pytest.fixture
def working_agreement(funded_agreement, config, oracle, university, university_account):
    """Funded, released to the university, salary 2000 reported."""
    from django_isa.services import release_funds_to_university, update_salary
    released = release_funds_to_university(config, university, funded_agreement, university_account)
    return update_salary(config, oracle, released, 2000)
