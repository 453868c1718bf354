import importlib

import pytest

from core.loader import dynamic_import, load_package
from core.registry import ServiceRegistry


def test_service_packages_register_themselves():
    loaded = load_package("services")
    assert {"services.stripe.service", "services.stripe.api", "services.stripe.cron"} <= set(loaded)

    loaded = load_package("modules")
    assert {"modules.analytics.service", "modules.analytics.api"} <= set(loaded)

    assert ServiceRegistry.get_service("stripe") is not None
    assert ServiceRegistry.get_service("analytics") is not None
    prefixes = {router.prefix for router in ServiceRegistry.get_all_apis()}
    assert {"/api/stripe", "/api/analytics"} <= prefixes


def test_missing_package_loads_nothing():
    assert load_package("does_not_exist") == []


def test_dynamic_import():
    job_class = dynamic_import("services.stripe.cron", "StripeSyncSweepJob")
    assert job_class.__name__ == "StripeSyncSweepJob"
    with pytest.raises(ImportError):
        dynamic_import("services.stripe.cron", "NoSuchJob")


@pytest.mark.parametrize("package", ["core", "core.db", "cron", "modules"])
def test_shared_packages_are_namespaces(package):
    module = importlib.import_module(package)
    assert getattr(module, "__file__", None) is None
    assert list(module.__path__)
