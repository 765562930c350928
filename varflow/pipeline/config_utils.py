"""System configuration: loading the YAML file and looking up programs and resources.
"""
import os
import sys

import toolz as tz
import yaml

DEFAULT_SYSTEM_CONFIG = "varflow_system.yaml"

class CmdNotFound(Exception):
    pass

def load_system_config(config_file=None, work_dir=None, allow_missing=False):
    """Load the system configuration, returning it with the file it came from.

    A config file that does not exist as given is looked up by name in the
    working directory and in the installation's config directory. With
    allow_missing, an empty configuration is used when nothing is found.
    """
    config_file = config_file or DEFAULT_SYSTEM_CONFIG
    if not os.path.exists(config_file):
        candidates = ([os.path.join(work_dir, config_file)] if work_dir else []) + \
                     [os.path.join(get_base_installdir(), "config", config_file)]
        found = [x for x in candidates if os.path.exists(x)]
        if found:
            config_file = found[0]
        elif allow_missing:
            config_file = None
        else:
            raise ValueError("Could not find system configuration file %s, looked in %s" %
                             (config_file, ", ".join(candidates)))
    config = load_config(config_file) if config_file else {"resources": {}}
    config.setdefault("algorithm", {})
    config["varflow_system"] = config_file
    return config, config_file

def get_base_installdir(cmd=sys.executable):
    return os.path.normpath(os.path.join(os.path.realpath(cmd), os.pardir, os.pardir))

def load_config(config_file):
    """Read a YAML configuration, expanding environment variables and ~ in values.

    Resource names are also made available lowercased.
    """
    with open(config_file) as in_handle:
        config = _expand_paths(yaml.safe_load(in_handle) or {})
    resources = config.setdefault("resources", {})
    resources.update({k.lower(): v for k, v in list(resources.items()) if k.lower() != k})
    return config

def _expand_paths(config):
    return {k: _expand_paths(v) if isinstance(v, dict) else expand_path(v)
            for k, v in config.items()}

def expand_path(path):
    """Expand environment variables and ~ (as $HOME) in string values, leaving others alone.
    """
    if not isinstance(path, str):
        return path
    return os.path.expandvars(path.replace("~", "$HOME"))

def get_resources(name, config):
    """Resources configured for a program, falling back to the `default` entry.
    """
    return tz.get_in(["resources", name], config,
                     tz.get_in(["resources", "default"], config, {}))

def get_max_concurrency(name, config, default=1):
    """Number of simultaneous tasks allowed for a stage.

    Configured as `jobs` under the stage's resources, or under the `default`
    resources, falling back to the stage's own declared limit.
    """
    resources = get_resources(name, config or {})
    jobs = resources.get("jobs") if isinstance(resources, dict) else None
    if jobs is None:
        return int(default)
    jobs = int(jobs)
    if jobs < 1:
        raise ValueError("Need at least one job for %s, got %s" % (name, jobs))
    return jobs

def get_program(name, config, default=None):
    """Resolve a program to an executable path.

    Uses `resources: {name: {cmd: ...}}`, else the default, else the bare name,
    looked up as given, next to the running interpreter and on the PATH.
    """
    pconfig = config.get("resources", {}).get(name)
    program = expand_path(_get_program_cmd(name, pconfig, default))
    is_ok = lambda f: os.path.isfile(f) and os.access(f, os.X_OK)
    if is_ok(program):
        return program
    # support conda installed programs next to the running interpreter
    if is_ok(os.path.join(os.path.dirname(sys.executable), program)):
        return os.path.join(os.path.dirname(sys.executable), program)
    for adir in os.environ.get("PATH", "").split(os.pathsep):
        if adir and is_ok(os.path.join(adir, program)):
            return os.path.join(adir, program)
    raise CmdNotFound(" ".join(map(repr, (name, pconfig, default))))

def _get_program_cmd(name, pconfig, default):
    if isinstance(pconfig, str):
        return pconfig
    if pconfig and pconfig.get("cmd"):
        return pconfig["cmd"]
    return default or name

def get_options(name, config):
    """Extra command line options configured for a program.
    """
    opts = tz.get_in(["resources", name, "options"], config, [])
    if isinstance(opts, str):
        opts = opts.split()
    return [str(x) for x in opts]
