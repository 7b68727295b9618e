"""mail/ -- Email delivery sink used by the password reset flow."""
