from app.services.lyrics.writer import GeneratedLyrics, LyricsBrief, LyricsWriter, lyrics_writer

__all__ = ["GeneratedLyrics", "LyricsBrief", "LyricsWriter", "lyrics_writer"]
