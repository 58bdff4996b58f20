"""Image payload lifecycle, storage routing, memory control and launcher."""
