"""Domain Layer: models, events, errors and the interfaces (ports) that
infrastructure adapters implement. Contains no I/O.
"""
