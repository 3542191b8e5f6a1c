"""HTTP API for the SalesDesk CRM."""
