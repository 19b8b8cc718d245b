"""Domain services for bookings, quotas and billing."""
