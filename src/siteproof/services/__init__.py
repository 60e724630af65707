"""Domain services shared by the API routes and background jobs."""
