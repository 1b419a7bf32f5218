"""D-Bus access to the GeoClue2 service and main-context scheduling."""
