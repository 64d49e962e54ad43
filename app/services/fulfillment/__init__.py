"""Order fulfillment pipeline: lyrics approval, audio, release and notification."""
