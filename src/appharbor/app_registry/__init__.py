"""
App Registry
Versioned app definitions, tenant installs, compatibility preflight,
canary deployments and runtime context assembly.
"""
