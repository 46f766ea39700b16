"""Programs, tasks and student enrollments."""
