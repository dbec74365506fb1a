"""Command plugins shipped with novagate."""
