GOOGLE_DRIVE = "google-drive"
AMAZON_S3 = "amazon-s3"

PROVIDER_DISPLAY_NAMES = {
    GOOGLE_DRIVE: "Google Drive",
    AMAZON_S3: "Amazon S3",
    "azure-blob": "Azure Blob Storage",
    "microsoft-teams": "Microsoft Teams",
    "dropbox": "Dropbox",
    "onedrive": "OneDrive",
}


def provider_display_name(provider: str | None) -> str:
    if not provider:
        return "cloud storage"
    return PROVIDER_DISPLAY_NAMES.get(provider, provider.replace("-", " ").title())
