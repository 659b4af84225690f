"""Settlement services: policy resolution, persistence, processor and orchestration."""
