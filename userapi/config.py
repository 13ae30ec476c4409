from configparser import ConfigParser
import os

_throw = object()

config = ConfigParser()
for path in [
        os.environ.get("USERAPI_CONFIG"),
        "config.ini",
        "/etc/userapi/config.ini",
    ]:
    if path and os.path.exists(path):
        config.read(path)
        break

def cfg(section, key, default=_throw):
    if not config.has_option(section, key):
        if default is _throw:
            raise Exception(
                    "Config option [{}] {} not found".format(section, key))
        return default
    return config.get(section, key)

def cfgi(section, key, default=_throw):
    v = cfg(section, key, default)
    if v is None or isinstance(v, int):
        return v
    return int(v)

def cfgb(section, key, default=_throw):
    v = cfg(section, key, default)
    if isinstance(v, bool):
        return v
    return v.lower() in ["yes", "true", "1"]

def cfgsections(prefix):
    for section in config.sections():
        if section.startswith(prefix):
            yield section
