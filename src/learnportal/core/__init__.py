"""Engine core: models, credentials, sessions, progress and wiring.

Import services from their modules, e.g.:
    from learnportal.core.engine import create_engine
"""
