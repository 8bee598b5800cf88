"""
Solvers module for the Cron Web Archiver.

Submodules:
    flaresolverr: ``FlareSolverrClient`` – async API client for a
        FlareSolverr instance (session create/destroy and ``request.get``).
"""
