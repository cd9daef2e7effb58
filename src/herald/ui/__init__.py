"""Interactive views and modals used by the Herald's commands."""
