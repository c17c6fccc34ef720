"""Services for the XianFeast application."""
