"""Protobuf compatibility patch needed before mediapipe builds its graphs."""

import google.protobuf.symbol_database as _symbol_database


def apply_fix():
    """Newer protobuf releases dropped SymbolDatabase.GetPrototype, which mediapipe still calls."""
    database = _symbol_database.Default()
    if not hasattr(database, "GetPrototype"):
        from google.protobuf import message_factory
        database.GetPrototype = message_factory.GetMessageClass
