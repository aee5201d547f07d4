"""
goalstake Core Module
=====================
Shared foundations for every other package:

    - config: Frozen dataclass configuration, YAML + GOALSTAKE_* env overrides
    - exceptions: Error hierarchy with ErrorKind discriminator
    - logging_config: loguru setup
    - models: Category / Goal / Step / Todo records and legacy schema resolution
    - paths: Goal and node addresses, store path scheme (current + legacy)
    - container: Dependency wiring
"""
