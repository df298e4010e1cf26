"""
Configuration of the sync tool: where the server is, who we are, which
collections to sync and where the tokens are kept.

The config file format is the one of the caldav library and the plann
tool, JSON or YAML, with sections::

    {"default": {"caldav_url": "https://cal.example.com/",
                 "caldav_user": "me", "caldav_pass": "secret"},
     "work": {"inherits": "default",
              "caldav_collections": ["/calendars/me/work/"]}}
"""
import json
import logging
import os
from fnmatch import fnmatch
from typing import Any
from typing import Dict
from typing import List
from typing import Optional

log = logging.getLogger("caldav_sync")

## keyword arguments understood by DAVRemote / AsyncDAVRemote
CONNECTION_KEYS = (
    "url",
    "username",
    "password",
    "bearer_token",
    "timeout",
    "ssl_verify_cert",
    "proxy",
    "load_objects",
    "limit",
    "emulate_sync_tokens",
    "huge_tree",
)

## short forms used in config files
KEY_ALIASES = {"user": "username", "pass": "password", "token": "bearer_token"}

DEFAULT_STORE = "caldav_sync_tokens.json"


def expand_config_section(config, section="default", blacklist=None):
    """
    In the "normal" case, returns [ section ]

    Also handled:

    * * gives all sections that aren't disabled
    * "meta"-sections with the keyword "contains" followed by a list of
      section names, recursively
    * glob patterns (work_* for all sections starting with work_)
    """
    if section == "*":
        return [
            x
            for x in config
            if isinstance(config[x], dict) and not config[x].get("disable", False)
        ]

    if set(section).isdisjoint(set("[*?")):
        values = config.get(section, {})
        if not isinstance(values, dict):
            ## a top-level setting, not a section
            return []
        if "contains" in values:
            results = []
            if not blacklist:
                blacklist = set()
            blacklist.add(section)
            for subsection in values["contains"]:
                if subsection in results or subsection in blacklist:
                    continue
                for found in expand_config_section(config, subsection, blacklist):
                    if found not in results:
                        results.append(found)
            return results
        if values.get("disable", False):
            return []
        return [section]

    results = []
    for s in config:
        if not fnmatch(s, section):
            continue
        if set(s).isdisjoint(set("[*?")):
            expanded = expand_config_section(config, s)
        else:
            ## section names shouldn't contain []?*, but don't recurse if they do
            expanded = [s]
        for found in expanded:
            if found not in results:
                results.append(found)
    return results


def config_section(config, section="default"):
    values = config.get(section)
    if not isinstance(values, dict):
        return {}
    if "inherits" in values:
        ret = config_section(config, values["inherits"])
    else:
        ret = {}
    ret.update(values)
    return ret


def read_config(fn, interactive_error=False):
    """
    Reads a JSON or YAML config file.  Without ``fn``, the usual
    locations are tried.  Returns {} when there is nothing usable.
    """
    if not fn:
        cfgdir = f"{os.environ.get('HOME', '/')}/.config"
        for config_file in (
            f"{cfgdir}/caldav/calendar.conf",
            f"{cfgdir}/caldav/calendar.yaml",
            f"{cfgdir}/caldav/calendar.json",
            f"{cfgdir}/calendar.conf",
            "/etc/calendar.conf",
            "/etc/caldav/calendar.conf",
        ):
            cfg = read_config(config_file)
            if cfg:
                return cfg
        return {}

    try:
        try:
            with open(fn, "rb") as config_file:
                return json.load(config_file)
        except json.decoder.JSONDecodeError:
            ## yaml is an optional dependency
            try:
                import yaml
            except ImportError:
                log.error(
                    f"config file {fn} exists but is not valid json, and pyyaml is not installed."
                )
                return {}
            try:
                with open(fn, "rb") as config_file:
                    return yaml.safe_load(config_file) or {}
            except yaml.YAMLError:
                log.error(
                    f"config file {fn} exists but is neither valid json nor yaml.  Check the syntax."
                )
    except FileNotFoundError:
        log.info("no config file found at %s", fn)
    except ValueError:
        if interactive_error:
            log.error(
                "error in config file.  The interactive configuration will overwrite it",
                exc_info=True,
            )
        else:
            log.error("error in config file.  It will be ignored", exc_info=True)
    return {}


def _to_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ("", "0", "false", "no", "off")
    return bool(value)


def _normalize(params: Dict[str, Any]) -> Dict[str, Any]:
    """
    Values from the environment are strings, convert the ones that
    aren't supposed to be.
    """
    ret = {}
    for key, value in params.items():
        key = KEY_ALIASES.get(key, key)
        if key not in CONNECTION_KEYS or value is None or value == "":
            continue
        if key == "timeout":
            value = float(value)
        elif key in ("limit",):
            value = int(value)
        elif key in ("ssl_verify_cert", "load_objects", "emulate_sync_tokens", "huge_tree"):
            value = _to_bool(value)
        ret[key] = value
    return ret


def _environment_params() -> Dict[str, Any]:
    return {
        key[7:].lower(): os.environ[key]
        for key in os.environ
        if key.startswith("CALDAV_") and not key.startswith("CALDAV_CONFIG")
    }


def _config_file_params(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k[7:]: v for k, v in values.items() if k.startswith("caldav_") and v}


def get_connection_params(
    check_config_file: bool = True,
    config_file: Optional[str] = None,
    section: Optional[str] = None,
    environment: bool = True,
    **config_data,
) -> Optional[Dict[str, Any]]:
    """
    Connection parameters for DAVRemote / AsyncDAVRemote, from the
    first source that has any, in this order:

    * the keyword arguments given
    * environment variables prepended with ``CALDAV_``, like
      ``CALDAV_URL``, ``CALDAV_USERNAME``, ``CALDAV_PASSWORD``
    * the config file (``CALDAV_CONFIG_FILE`` / ``CALDAV_CONFIG_SECTION``
      are honored), keys prepended with ``caldav_``

    Returns None if nothing is configured.
    """
    params = _normalize(config_data)
    if params:
        return params

    if environment:
        params = _normalize(_environment_params())
        if params:
            return params
        if not config_file:
            config_file = os.environ.get("CALDAV_CONFIG_FILE")
        if not section:
            section = os.environ.get("CALDAV_CONFIG_SECTION")

    if check_config_file:
        cfg = read_config(config_file)
        if cfg:
            values = config_section(cfg, section or "default")
            params = _normalize(_config_file_params(values))
            if params:
                return params
    return None


def get_collections(
    config_file: Optional[str] = None,
    section: Optional[str] = None,
    environment: bool = True,
) -> List[str]:
    """
    Collection paths to sync: ``CALDAV_COLLECTIONS`` (comma separated)
    or ``caldav_collections`` in the config section(s).
    """
    if environment and os.environ.get("CALDAV_COLLECTIONS"):
        return [
            x.strip() for x in os.environ["CALDAV_COLLECTIONS"].split(",") if x.strip()
        ]
    cfg = read_config(config_file or os.environ.get("CALDAV_CONFIG_FILE"))
    if not cfg:
        return []
    ret = []
    section_name = section or os.environ.get("CALDAV_CONFIG_SECTION") or "default"
    for name in expand_config_section(cfg, section_name):
        collections = config_section(cfg, name).get("caldav_collections", [])
        if isinstance(collections, str):
            collections = [x.strip() for x in collections.split(",")]
        for c in collections:
            if c and c not in ret:
                ret.append(c)
    return ret


def get_store_path() -> str:
    return os.environ.get("CALDAV_SYNC_STORE") or DEFAULT_STORE


def get_remote(**kwargs):
    """
    A DAVRemote built from get_connection_params(**kwargs), or None
    if no server is configured.
    """
    from .remote import DAVRemote

    params = get_connection_params(**kwargs)
    if not params or "url" not in params:
        return None
    return DAVRemote(**params)


def get_async_remote(**kwargs):
    from .remote import AsyncDAVRemote

    params = get_connection_params(**kwargs)
    if not params or "url" not in params:
        return None
    return AsyncDAVRemote(**params)
