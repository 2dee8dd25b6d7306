import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..exceptions import ConflictError, NotFoundError
from ..models.database import Case, Client

logger = logging.getLogger(__name__)


class ClientService:
    def create_client(self, db: Session, firm_id: int, data: Dict[str, Any]) -> Client:
        client = Client(firm_id=firm_id, **data)
        db.add(client)
        db.commit()
        db.refresh(client)
        logger.info(f"Created client {client.id} in firm {firm_id}")
        return client

    def list_clients(self, db: Session, firm_id: int, search: Optional[str] = None,
                     skip: int = 0, limit: int = 100) -> List[Client]:
        query = db.query(Client).filter(Client.firm_id == firm_id)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(
                Client.first_name.ilike(pattern),
                Client.last_name.ilike(pattern),
                Client.company.ilike(pattern),
                Client.email.ilike(pattern),
            ))
        return query.order_by(Client.last_name, Client.first_name, Client.id).offset(skip).limit(limit).all()

    def get_client(self, db: Session, firm_id: int, client_id: int) -> Client:
        client = db.query(Client).filter(Client.id == client_id, Client.firm_id == firm_id).first()
        if client is None:
            raise NotFoundError("Client not found")
        return client

    def update_client(self, db: Session, firm_id: int, client_id: int, data: Dict[str, Any]) -> Client:
        client = self.get_client(db, firm_id, client_id)
        for key, value in data.items():
            setattr(client, key, value)
        db.commit()
        db.refresh(client)
        logger.info(f"Updated client {client_id}")
        return client

    def delete_client(self, db: Session, firm_id: int, client_id: int):
        client = self.get_client(db, firm_id, client_id)
        if db.query(Case).filter(Case.client_id == client.id).count():
            raise ConflictError("Client still has cases and cannot be deleted")
        db.delete(client)
        db.commit()
        logger.info(f"Deleted client {client_id}")


client_service = ClientService()
