"""
functions to access the system configuration in a clearer way
"""
import toolz as tz

from varflow.utils import file_exists

LOOKUPS = {
    "ref_file": {"keys": ["reference", "fasta"], "checker": file_exists},
    "annotated_ref_file": {"keys": ["reference", "annotated"], "checker": file_exists},
    "cluster_patterns": {"keys": ["patterns", "cluster"]},
    "group_patterns": {"keys": ["patterns", "group"]},
    "min_mean_coverage": {"keys": ["algorithm", "min_mean_coverage"], "default": 20},
    "min_site_coverage": {"keys": ["algorithm", "min_site_coverage"], "default": 5},
    "min_alt_proportion": {"keys": ["algorithm", "min_alt_proportion"], "default": 0.8},
    "min_snp_quality": {"keys": ["algorithm", "min_snp_quality"], "default": 150},
    "min_nonsnp_quality": {"keys": ["algorithm", "min_nonsnp_quality"], "default": 15},
    "spoligotype": {"keys": ["algorithm", "spoligotype"], "default": False},
    "fastq_pattern": {"keys": ["fastq_pattern"]},
}

def get_thresholds(config):
    """Quality thresholds handed through to variant filtering and cluster tools.
    """
    return {k: _g["get_" + k](config) for k in ["min_mean_coverage", "min_site_coverage",
                                                "min_alt_proportion", "min_snp_quality",
                                                "min_nonsnp_quality"]}

def getter(keys, global_default=None):
    def lookup(config, default=None):
        return tz.get_in(keys, config, global_default if default is None else default)
    return lookup

def setter(keys, checker=None):
    def update(config, value):
        if checker and not checker(value):
            raise ValueError("Invalid value for %s: %s" % ("/".join(keys), value))
        return tz.update_in(config, keys, lambda x: value, default=value)
    return update

def is_setter(keys):
    def present(config):
        return bool(tz.get_in(keys, config))
    return present

# get_, set_ and is_set_ functions for every lookup, unless defined explicitly above
_g = globals()
for name, lookup in LOOKUPS.items():
    for prefix, make in [("get_", lambda x: getter(x["keys"], x.get("default"))),
                         ("set_", lambda x: setter(x["keys"], x.get("checker"))),
                         ("is_set_", lambda x: is_setter(x["keys"]))]:
        if prefix + name not in _g:
            _g[prefix + name] = make(lookup)

def get_keys(lookup):
    """Configuration keys behind a lookup name, or None if unknown.
    """
    return tz.get_in((lookup, "keys"), LOOKUPS)
