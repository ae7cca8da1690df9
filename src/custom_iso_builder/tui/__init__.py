"""Interactive front end for custom_iso_builder."""
