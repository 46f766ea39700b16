"""In-app and email notifications for engine events."""
