import pytest

from app.tenants.service import InvalidSubdomain, slugify_subdomain, unique_subdomain, validate_subdomain
from conftest import make_tenant


def test_slugify_pads_single_character_names():
    assert slugify_subdomain("A") == "a-workspace"
    assert slugify_subdomain("Acme & Sons, Ltd.") == "acme-sons-ltd"
    assert slugify_subdomain("!!!") == "workspace"


def test_derived_subdomains_pass_signup_validation(db):
    make_tenant(db, "j-workspace")
    for base in ("j", "A", "www", "Globex Corporation"):
        assert validate_subdomain(unique_subdomain(db, base))
    assert unique_subdomain(db, "j") == "j-workspace-1"


def test_validate_subdomain_rejects_short_and_reserved():
    with pytest.raises(InvalidSubdomain):
        validate_subdomain("a")
    with pytest.raises(InvalidSubdomain):
        validate_subdomain("www")
