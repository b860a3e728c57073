from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from api.lifespan import app_lifespan
from api.v1.entitlements.router import API_V1_ENTITLEMENTS_ROUTER
from api.v1.system import SYSTEM_ROUTER


app = FastAPI(lifespan=app_lifespan)

# Routers
app.include_router(API_V1_ENTITLEMENTS_ROUTER)
app.include_router(SYSTEM_ROUTER)

# Middlewares
origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
