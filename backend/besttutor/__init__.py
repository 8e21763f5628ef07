"""BestTutorEver backend."""
