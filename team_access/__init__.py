"""Admin team management and role-based access control service."""
