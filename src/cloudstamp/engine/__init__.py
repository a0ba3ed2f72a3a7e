"""Template specification and provisioning engine."""
