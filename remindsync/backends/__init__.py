"""Native backend interfaces."""
