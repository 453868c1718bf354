import importlib
import pkgutil
from typing import Iterable, List

from core.logger import Logger
logger = Logger(__name__)

PACKAGES = ("services", "modules")
SUBMODULES = ("service", "api", "cron")


def load_package(package_name: str, submodules: Iterable[str] = SUBMODULES) -> List[str]:
    """
    Import every sub-package of `package_name` and its known submodules
    (service, api, cron) so they can register themselves.
    Returns the dotted names that were loaded.
    """
    loaded = []
    try:
        package = importlib.import_module(package_name)
    except ModuleNotFoundError:
        logger.warning(f"Package not found: {package_name}")
        return loaded

    for module_info in pkgutil.iter_modules(package.__path__, prefix=f"{package_name}."):
        if not module_info.ispkg:
            continue
        for sub in submodules:
            submodule_path = f"{module_info.name}.{sub}"
            try:
                importlib.import_module(submodule_path)
            except ModuleNotFoundError as e:
                # only a missing submodule is expected; a missing dependency inside it is not
                if e.name != submodule_path:
                    logger.error(f"Failed to load {submodule_path}: {e}")
                continue
            except Exception as e:
                logger.error(f"Failed to load {submodule_path}: {e}")
                continue
            loaded.append(submodule_path)
            logger.info(f"Loaded submodule: {submodule_path}")
    return loaded


def auto_load_all() -> List[str]:
    loaded = []
    for base in PACKAGES:
        loaded.extend(load_package(base))
    return loaded


def dynamic_import(module_path: str, class_name: str):
    """
    Dynamically import and return a class from a module path.
    e.g., module_path='services.stripe.cron', class_name='StripeSyncSweepJob'
    """
    try:
        module = importlib.import_module(module_path)
        return getattr(module, class_name)
    except (ImportError, AttributeError) as e:
        raise ImportError(f"Failed to import {class_name} from {module_path}: {e}")
