"""InternHub enrollment progression, payment settlement and certification service."""
