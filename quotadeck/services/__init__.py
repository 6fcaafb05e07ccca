"""Services for the management API and provider quotas."""
