from pagesdns.app.db import Base, utcnow
from sqlalchemy import Column, Integer, String, DateTime, Text


class PagesUrl(Base):
    """Domain State Store row: one per repository."""

    __tablename__ = "pages_urls"
    repo_name = Column(String(255), primary_key=True)
    pages_url = Column(String(2048), nullable=True)
    custom_domain = Column(String(255), nullable=True)

    def __repr__(self):
        return "<PagesUrl(repo_name='%s', pages_url='%s', custom_domain='%s')>" % (
            self.repo_name,
            self.pages_url,
            self.custom_domain,
        )


class CloudflareRecord(Base):
    """Weak reference from a repository to its remote DNS record."""

    __tablename__ = "cloudflare_records"
    id = Column(Integer, primary_key=True)
    repo_name = Column(String(255), unique=True)
    cname_record = Column(String(255))

    def __repr__(self):
        return "<CloudflareRecord(repo_name='%s', cname_record='%s')>" % (
            self.repo_name,
            self.cname_record,
        )


class Token(Base):
    __tablename__ = "tokens"
    id = Column(String(64), primary_key=True)
    token = Column(Text)
    expires_at = Column(DateTime)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self):
        # never include the token value
        return "<Token(id='%s', expires_at='%s')>" % (self.id, self.expires_at)


class Installation(Base):
    __tablename__ = "installations"
    installation_id = Column(Integer, primary_key=True, autoincrement=False)
    cloudflare_zone_id = Column(String(255))
    cloudflare_api_token = Column(Text)  # encrypted
    cloudflare_email = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return "<Installation(installation_id='%s', zone_id='%s')>" % (
            self.installation_id,
            self.cloudflare_zone_id,
        )
