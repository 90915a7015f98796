"""
Configuration settings for the relay server and its clients
"""
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings"""
    
    # Server
    SERVER_HOST: str = os.getenv("SERVER_HOST", "localhost")
    SERVER_PORT: int = int(os.getenv("SERVER_PORT", "3000"))
    
    # Clients
    RELAY_URL: str = os.getenv("RELAY_URL", "ws://localhost:3000/ws")
    MAX_MESSAGE_SIZE: int = int(os.getenv("MAX_MESSAGE_SIZE", str(50 * 1024 * 1024)))
    
    # Chunked transfer
    CHUNK_SIZE: int = int(os.getenv("CHUNK_SIZE", str(64 * 1024)))
    CHUNK_SEND_DELAY: float = float(os.getenv("CHUNK_SEND_DELAY", "0.05"))
    MAX_BINARY_UPLOAD_SIZE: int = int(os.getenv("MAX_BINARY_UPLOAD_SIZE", str(50 * 1024 * 1024)))
    MAX_DIRECT_UPLOAD_SIZE: int = int(os.getenv("MAX_DIRECT_UPLOAD_SIZE", str(10 * 1024 * 1024)))
    MAX_TOTAL_CHUNKS: int = int(os.getenv("MAX_TOTAL_CHUNKS", str(MAX_BINARY_UPLOAD_SIZE // 1024)))
    UPLOAD_TIMEOUT_SECONDS: float = float(os.getenv("UPLOAD_TIMEOUT_SECONDS", "120"))
    
    # Receiver sessions
    SESSION_TTL_SECONDS: float = float(os.getenv("SESSION_TTL_SECONDS", "300"))
    SESSION_SWEEP_INTERVAL: float = float(os.getenv("SESSION_SWEEP_INTERVAL", "30"))
    
    # Images accepted on both ends of the transfer
    SUPPORTED_MIME_TYPES = ("image/png", "image/gif", "image/jpeg", "image/webp")
    
    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    
    # Application
    APP_TITLE: str = "Haunted Aquarium Relay"
    APP_DESCRIPTION: str = "WebSocket relay between the festival control panel and aquarium displays"
    APP_VERSION: str = "1.0.0"


settings = Settings()
