"""Mirror news items from a remote content API into a local store."""
