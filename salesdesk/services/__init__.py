"""Business services for the SalesDesk CRM."""
