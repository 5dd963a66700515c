"""Media storage module.

Stands in for the external object-storage/CDN service: raw bytes go in, a
durable URL comes out. Files are stored on local disk and metadata is
tracked in DuckDB. Messages only ever reference media by URL.

Supported media types:
- Images: jpg, png, gif, webp
- Video: mp4, webm, quicktime
- Audio: mp3, wav, ogg, m4a
- Anything else up to the configured size limit
"""
